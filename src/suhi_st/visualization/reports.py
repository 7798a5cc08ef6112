def print_collection_summary(info):
    """Prints the metadata of a filtered collection (CollectionInfo)."""
    print("\n--- IMAGE COLLECTION ---")
    print(f"Collection : {info.collection_id}")
    print(f"Bands      : {', '.join(info.band_names)}")
    print(f"Filters    : {len(info.filters)}")
    for f in info.filters:
        print(f"  - {f}")
    print(f"Images     : {len(info.ids)}")

    if info.ids:
        print(f"{'Image':<44} | {'Date':<10} | {'Cloud %':>7}")
        print("-" * 68)
        for image_id, date, cloud in zip(info.ids, info.dates, info.cloud_covers):
            date_str = date.strftime("%Y-%m-%d") if date else "N/A"
            cloud_str = f"{cloud:.1f}" if cloud is not None else "N/A"
            print(f"{image_id:<44} | {date_str:<10} | {cloud_str:>7}")
    else:
        print("No images match the filters; the composite will be empty.")
    print("------------------------")


def print_image_summary(image, title="IMAGE"):
    """Prints band names, grid and valid pixel counts of an image."""
    print(f"\n--- {title} ---")
    print(f"Grid       : {image.grid}")
    for name in image.band_names:
        valid = image.valid_count(name)
        pct = 100.0 * valid / image.grid.pixel_count if image.grid.pixel_count else 0.0
        print(f"{name:<10} : {valid:,} valid pixels ({pct:.1f}%)")
    for key, value in sorted(image.properties.items()):
        print(f"{key:<10} : {value}")
    print("-" * (len(title) + 8))


def print_histogram(histogram, max_rows=20):
    """Prints a histogram as a text table, merging buckets down to max_rows."""
    print(f"\n--- HISTOGRAM: {histogram.band} ---")
    if histogram.total == 0:
        print("No valid pixels in region.")
        print("---------------------------")
        return

    edges = list(histogram.bucket_edges)
    counts = list(histogram.counts)
    step = max(1, -(-len(counts) // max_rows))

    print(f"Pixels: {histogram.total:,} at {histogram.scale:g} m")
    print(f"{'From':>9} | {'To':>9} | {'Count':>10}")
    print("-" * 34)
    peak = max(counts) or 1
    for i in range(0, len(counts), step):
        lo = edges[i]
        hi = edges[min(i + step, len(counts))]
        count = sum(counts[i:i + step])
        bar = "#" * int(20 * count / (peak * step))
        print(f"{lo:>9.2f} | {hi:>9.2f} | {count:>10,} {bar}")
    print("---------------------------")


def print_progress(step, total, message):
    """Prints one pipeline step."""
    print(f"[{step}/{total}] {message}")


def print_statistics(stats, label="Region"):
    """Prints region statistics as returned by region_statistics."""
    if not stats or stats.get("count", 0) == 0:
        print(f"{label}: no valid pixels")
        return
    print(f"{label}: mean {stats['mean']:.2f}, median {stats['median']:.2f}, "
          f"min {stats['min']:.2f}, max {stats['max']:.2f} (n={stats['count']:,})")
