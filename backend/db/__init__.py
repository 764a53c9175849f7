# Importing any model module goes through db.database so every table is registered first.
from db import database  # noqa: F401
