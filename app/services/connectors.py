"""
Connector registry: Platform -> connector class.
"""
from typing import Union

from app.models import Platform
from app.services.connector_base import Connector
from app.services.nuvemshop_service import NuvemshopConnector
from app.services.olist_tiny_service import OlistTinyConnector
from app.services.shopee_service import ShopeeConnector
from app.services.shopify_service import ShopifyConnector

CONNECTORS: dict[Platform, type[Connector]] = {
    Platform.SHOPEE: ShopeeConnector,
    Platform.SHOPIFY: ShopifyConnector,
    Platform.NUVEMSHOP: NuvemshopConnector,
    Platform.OLIST_TINY: OlistTinyConnector,
}


def get_connector(platform: Union[Platform, str], **kwargs) -> Connector:
    """Build the connector for platform. kwargs go to the constructor (settings, client, limiter, sleep)."""
    return CONNECTORS[Platform(platform)](**kwargs)
