"""
Test doubles for the lead pipeline: scripted chat model, in-memory repository
and recording fakes for the external ports.
"""
