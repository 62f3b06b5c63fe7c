"""Routing — path patterns compiled to regexes when the app freezes."""
