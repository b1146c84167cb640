"""
State Machine Module for the order conversation
"""
from app.state_machine.states import OrderFlowState
from app.state_machine.manager import Session, SessionStore

__all__ = ["OrderFlowState", "Session", "SessionStore"]
