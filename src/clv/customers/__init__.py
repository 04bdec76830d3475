"""Customer records, auth events and the document table behind the HTTP API."""
