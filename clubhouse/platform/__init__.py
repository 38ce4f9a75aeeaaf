"""Domain services for the membership core."""
