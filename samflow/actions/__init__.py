"""Samflow step handlers."""

from samflow.actions.executor import BaseStepHandler, StepDispatcher

__all__ = ["BaseStepHandler", "StepDispatcher"]
