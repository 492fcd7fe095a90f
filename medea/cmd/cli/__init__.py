"""
Sub functionalities of the Medea CLI
"""

from .serve import serve_app
from .config import config_app
from .routes import routes_app
from .calc import calc
from .doctor import doctor_app
