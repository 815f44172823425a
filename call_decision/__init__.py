"""
Call Decision Engine

Classifies insurance customer-service call transcripts into ticket incidents
drawn from a closed taxonomy.
"""

__version__ = "1.0.0"
