"""
Avatar Chat

Voice/text conversation with an AI avatar: a FastAPI websocket backend that
runs speech-to-text, reply generation and speech synthesis per turn, and a
terminal client with microphone capture and playback.
"""

__version__ = "1.0.0"
