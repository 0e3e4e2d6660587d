from pesos.models.source import Source, UserSource
from pesos.models.item import Item
from pesos.models.activity_log import ActivityLog

__all__ = ['Source', 'UserSource', 'Item', 'ActivityLog']
