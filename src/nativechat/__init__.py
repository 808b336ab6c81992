"""nativechat: conversation state and persistence for a multimodal chat client."""

__version__ = "0.1.0"
