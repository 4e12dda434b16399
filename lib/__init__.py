# Operations Assistant - Core Library
"""
Persistence, configuration, observability and the assistant core
(``lib.assistant``).
"""
