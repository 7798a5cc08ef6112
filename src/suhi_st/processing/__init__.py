from .thermal import (
    apply_scale_factors,
    cloud_mask,
    dn_to_fahrenheit,
    dn_to_kelvin,
)
from .composite import MeanReducer, mean_composite
