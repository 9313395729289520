"""Ambient services shared by every orchestration component."""
