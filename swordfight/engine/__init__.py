# swordfight/engine/__init__.py
from .game import Game
from .store import JsonFileStore, MemoryStore
