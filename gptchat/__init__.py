"""gptchat — streaming chat-completion conversation engine"""

__version__ = "0.1.0"
