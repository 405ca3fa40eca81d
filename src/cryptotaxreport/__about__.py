__title__ = "CryptoTaxReport"
__version__ = "0.1.0"
