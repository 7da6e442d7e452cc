from .datalab_client import DataLabService

__all__ = ["DataLabService"]
