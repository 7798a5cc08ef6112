import numpy as np

from ..data.image import Image

# USGS Collection 2 Level-2 ST scaling: Kelvin = DN * 0.00341802 + 149.0
ST_SCALE = 0.00341802
ST_OFFSET = 149.0
KELVIN_OFFSET = 273.15

# QA_PIXEL bit positions (Landsat 8/9 Collection 2)
CLOUD_BIT = 3
CLOUD_SHADOW_BIT = 4

THERMAL_BAND = "ST_B10"
QA_BAND = "QA_PIXEL"


def dn_to_kelvin(dn):
    return dn * ST_SCALE + ST_OFFSET


def kelvin_to_celsius(kelvin):
    return kelvin - KELVIN_OFFSET


def celsius_to_fahrenheit(celsius):
    return celsius * 1.8 + 32


def dn_to_fahrenheit(dn):
    """Digital count -> Kelvin -> Celsius -> Fahrenheit."""
    return celsius_to_fahrenheit(kelvin_to_celsius(dn_to_kelvin(dn)))


def cloud_mask(image: Image, qa_band: str = QA_BAND) -> Image:
    """
    Masks clouds and cloud shadows using the QA_PIXEL band.

    A pixel is invalidated when bit 3 (cloud) or bit 4 (cloud shadow) is
    set. Pixels with both bits clear keep the validity they had.
    """
    qa = image.band(qa_band).astype(np.int64)
    flagged = (qa & (1 << CLOUD_BIT)) | (qa & (1 << CLOUD_SHADOW_BIT))
    return image.update_mask(flagged == 0)


def apply_scale_factors(image: Image, band: str = THERMAL_BAND) -> Image:
    """
    Replaces the raw thermal band with surface temperature in Fahrenheit.

    The band keeps its position and its mask; values under masked pixels
    are converted too but never used downstream.
    """
    dn = image.band(band).astype("float64")
    fahrenheit = dn_to_fahrenheit(dn).astype("float32")
    return image.add_bands({band: fahrenheit}, overwrite=True)
