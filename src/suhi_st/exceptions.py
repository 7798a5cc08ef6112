class PixelLimitError(ValueError):
    """A region or export holds more pixels than its configured budget."""

    def __init__(self, pixels: int, max_pixels: float, what: str = "region"):
        self.pixels = int(pixels)
        self.max_pixels = max_pixels
        super().__init__(
            f"Too many pixels in {what}: {self.pixels:,} (max: {int(max_pixels):,}). "
            f"Increase max_pixels or use a coarser scale."
        )
