"""AIBS Informatics AWS Lambda deployment toolchain.

Builds deployable zip artifacts for Python AWS Lambda functions and reconciles
remote function, event source mapping and schedule state across regions.
"""
