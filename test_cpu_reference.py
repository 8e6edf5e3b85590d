"""
Test for the CPU reference pipeline (morphology, seeding, propagation, counting).

Tests:
- Top-hat of a flat image is zero; small bright blobs survive, large ones vanish
- Opening is idempotent
- Closing mode extracts dark features
- Seeds are unique and positive on foreground, zero on background
- Bounded propagation converges on short runs, not on long ones
- Label count on a synthetic scene matches exact connected components
"""

import os
import sys

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from src.processing import CpuReference


def test_flat_image_top_hat_is_zero():
    gray = np.full((60, 80), 128, dtype=np.uint8)
    result = CpuReference.top_hat(gray, 7)
    assert result.max() == 0
    print("PASS: flat image -> top-hat 0")


def test_top_hat_keeps_small_features():
    gray = np.full((80, 80), 50, dtype=np.uint8)
    gray[10:15, 10:15] = 200      # smaller than the 15x15 element
    gray[30:70, 30:70] = 200      # larger than the element

    result = CpuReference.top_hat(gray, 7)
    assert (result[10:15, 10:15] == 150).all(), "Small blob survives"
    assert result[35:65, 35:65].max() == 0, "Large region removed"
    assert result.min() >= 0
    print("PASS: top-hat keeps features smaller than the element")


def test_opening_is_idempotent():
    rng = np.random.default_rng(7)
    gray = rng.integers(0, 256, size=(64, 96), dtype=np.uint8)
    for radius in (1, 3, 7):
        once = CpuReference.opening(gray, radius)
        twice = CpuReference.opening(once, radius)
        assert np.array_equal(once, twice), f"Opening not idempotent at r={radius}"
        assert (once <= gray).all(), "Opening is anti-extensive"
    print("PASS: opening idempotent and anti-extensive")


def test_closing_mode_extracts_dark_features():
    gray = np.full((40, 40), 180, dtype=np.uint8)
    gray[18:22, 18:22] = 30

    result = CpuReference.top_hat(gray, 7, use_opening=False)
    assert (result[18:22, 18:22] == 150).all()
    assert result[0:10, 0:10].max() == 0

    morph = CpuReference.top_hat(gray, 7, use_opening=False, subtraction=False)
    assert np.array_equal(morph, CpuReference.closing(gray, 7))
    print("PASS: closing mode / subtraction off")


def test_seed_labels():
    levels = np.array([
        [0, 200, 200],
        [10, 200, 0],
    ], dtype=np.uint8)
    seeds = CpuReference.seed_labels(levels, 100)

    assert seeds.dtype == np.uint32
    assert seeds.tolist() == [[0, 2, 3], [0, 5, 0]]

    foreground = seeds[seeds > 0]
    assert np.unique(foreground).size == foreground.size, "Seeds unique"
    print("PASS: seeds are linear index + 1")


def test_short_segment_converges():
    levels = np.zeros((5, 40), dtype=np.uint8)
    levels[2, 3:36] = 255          # L = 33 = 2 * 16 + 1

    labels = CpuReference.propagate_labels(CpuReference.seed_labels(levels, 1), 16)
    segment = labels[2, 3:36]
    assert np.unique(segment).size == 1
    assert segment[0] == 2 * 40 + 35 + 1, "Carries the maximum seed"
    assert labels[levels == 0].max() == 0, "Background stays 0"
    assert CpuReference.count_labels(labels) == 1
    print("PASS: L=33 segment converges in 16 rounds")


def test_long_segment_overcounts():
    levels = np.zeros((3, 120), dtype=np.uint8)
    levels[1, 5:105] = 255

    labels, count = CpuReference.label_image(levels, 1, rounds=16)
    assert count > 1, "Bounded rounds cannot span 100 px"
    assert CpuReference.exact_component_count(levels, 1) == 1
    print(f"PASS: long segment gives {count} labels with 16 rounds")


def test_converged_labels_are_a_fixed_point():
    levels = np.zeros((20, 20), dtype=np.uint8)
    levels[2:6, 2:6] = 255
    levels[10:14, 12:18] = 255

    labels = CpuReference.propagate_labels(CpuReference.seed_labels(levels, 1), 16)
    again = CpuReference.propagate_labels(labels, 3)
    assert np.array_equal(labels, again)
    assert CpuReference.count_labels(labels) == 2
    print("PASS: converged labels stable under further rounds")


def test_count_labels():
    labels = np.array([[0, 5, 5], [9, 0, 42]], dtype=np.uint32)
    assert CpuReference.count_labels(labels) == 3
    assert CpuReference.count_labels(np.zeros((4, 4), np.uint32)) == 0
    print("PASS: distinct non-zero labels")


def test_synthetic_scene_count():
    centers = [(20, 20), (60, 25), (100, 70), (30, 90), (140, 100)]
    scene = CpuReference.synthetic_scene(160, 120, centers)
    assert scene.shape == (120, 160, 3)

    tophat = CpuReference.top_hat(CpuReference.to_gray(scene), 7)
    level = CpuReference.otsu_level(tophat)
    assert level > 0

    _, count = CpuReference.label_image(tophat, level)
    assert count == len(centers)
    assert CpuReference.exact_component_count(tophat, level) == len(centers)
    print(f"PASS: synthetic scene -> {count} blobs at level {level}")


if __name__ == "__main__":
    test_flat_image_top_hat_is_zero()
    test_top_hat_keeps_small_features()
    test_opening_is_idempotent()
    test_closing_mode_extracts_dark_features()
    test_seed_labels()
    test_short_segment_converges()
    test_long_segment_overcounts()
    test_converged_labels_are_a_fixed_point()
    test_count_labels()
    test_synthetic_scene_count()
    print("\nAll CPU reference tests passed")
