"""Evaluation domain services: level gates, qualification and the
close -> evaluate -> publish workflow.
"""
