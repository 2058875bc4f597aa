"""API layer for the relocalization service"""
