"""
EDI Bridge

X12 document parsing and generation with AS2 and SFTP partner transport.
"""

__version__ = "1.0.0"
