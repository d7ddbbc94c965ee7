"""Realtime matchmaking and battle sessions.

Pure(ish) domain logic with no Flask imports: the socket layer feeds
``ConnectionEvent``s into ``BattleServer.dispatch`` and supplies a
``Transport`` for outbound frames.
"""
