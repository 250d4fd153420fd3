"""Multi-turn appointment dialogue orchestrator.

A caller's turns arrive over an OpenAI-compatible chat endpoint; each turn
runs one chain of dialogue nodes against the per-call conversation state,
using an LLM oracle for language understanding and a REST scheduling
backend for users, availability and appointments.
"""

__version__ = "0.1.0"
