"""
State Definitions for the order flow
"""
from enum import Enum


class OrderFlowState(str, Enum):
    """Where a user is in the guided pricing/ordering flow"""

    MENU = "menu"
    WAITING_URL = "waiting_url"
    CATEGORY_SELECTION = "category_selection"
    SIZE_SELECTION = "size_selection"


# Context keys, filled strictly in this order
CTX_URL = "url"
CTX_PRODUCT_REF = "product_ref"
CTX_PRODUCT = "product"
CTX_CATEGORY = "category"
CTX_VARIANT_ID = "variant_id"
CTX_SIZE = "size"
CTX_CALCULATION = "calculation"


# Valid transitions; MENU is reachable from everywhere through cancel/clear
ORDER_FLOW_TRANSITIONS = {
    OrderFlowState.MENU: [
        OrderFlowState.MENU,
        OrderFlowState.WAITING_URL,
    ],
    OrderFlowState.WAITING_URL: [
        OrderFlowState.MENU,
        OrderFlowState.WAITING_URL,
        OrderFlowState.CATEGORY_SELECTION,
    ],
    OrderFlowState.CATEGORY_SELECTION: [
        OrderFlowState.MENU,
        OrderFlowState.WAITING_URL,
        OrderFlowState.CATEGORY_SELECTION,
        OrderFlowState.SIZE_SELECTION,
    ],
    OrderFlowState.SIZE_SELECTION: [
        OrderFlowState.MENU,
        OrderFlowState.WAITING_URL,
        OrderFlowState.CATEGORY_SELECTION,
        OrderFlowState.SIZE_SELECTION,
    ],
}
