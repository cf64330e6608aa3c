"""
Module 'purchases': droits d'accès aux examens achetés (réconciliation, consultation).
"""
