"""Version 1 of the Study Buddy monitoring API."""
