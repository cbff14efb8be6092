"""Meeting transcript to CRM contact sync."""
