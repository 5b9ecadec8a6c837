"""LiveScribe - real-time microphone transcription client."""

__version__ = "0.1.0"
