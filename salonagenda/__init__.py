"""
salonagenda - scheduling core for salon appointment agendas.
"""

__version__ = "0.3.0"
