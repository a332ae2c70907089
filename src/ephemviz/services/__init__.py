"""Collaborator implementations and the session orchestrator."""
