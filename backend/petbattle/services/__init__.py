"""Storage-facing collaborators for the realtime core.

The realtime package never imports Flask or SQLAlchemy; it calls these
services through the narrow ``load_pet_snapshot`` / ``save_battle_result``
interface.
"""
