"""Repositories backed by the relational store."""
