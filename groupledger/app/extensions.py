"""
extensions.py — Flask extension singletons.

Created here without an app and bound in create_app() via init_app(), so any
module can import them without circular imports and tests can build their own
app instances:

    from groupledger.app.extensions import db, ma
"""

from flask_sqlalchemy import SQLAlchemy
from flask_marshmallow import Marshmallow

db = SQLAlchemy()

# Schema inheritance rule:
#   Validation schemas in app/schemas/ inherit from marshmallow.Schema, NOT
#   ma.Schema. ma.Schema needs an active app context and the unit tests in
#   tests/unit/ load schemas without one.
ma = Marshmallow()
