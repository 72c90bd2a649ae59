"""kota: an interactive coding agent with persistent, resumable sessions."""
