"""Coordination around bd: pre-flight, reservations, related work, output."""

from bdh.coordination.autoreserve import AutoReserver, AutoReserveResult, ReservationPlan
from bdh.coordination.decision import Decision, OverrideDirective, PendingDecision
from bdh.coordination.interceptor import CommandInterceptor, PassthroughResult
from bdh.coordination.invocation import CommandInvocation, parse_invocation
from bdh.coordination.output import OutputSession, render
from bdh.coordination.related_work import RelatedWorkItem

__all__ = [
    "AutoReserveResult",
    "AutoReserver",
    "CommandInterceptor",
    "CommandInvocation",
    "Decision",
    "OutputSession",
    "OverrideDirective",
    "PassthroughResult",
    "PendingDecision",
    "RelatedWorkItem",
    "ReservationPlan",
    "parse_invocation",
    "render",
]
