"""Request models for the Community Microhelp API."""
