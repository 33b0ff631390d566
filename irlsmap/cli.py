"""
Command-line interface for irlsmap
"""

import logging
from pathlib import Path

import click
import numpy as np
from PIL import Image

from .degradation import DegradationOperator, gaussian_kernel
from .image_data import ImageData, RESAMPLE_METHODS
from .metrics import psnr
from .regularizers import (
    BilateralTotalVariationRegularizer,
    SmoothnessRegularizer,
    TotalVariationRegularizer,
)
from .solver import IrlsMapSolver, SolverOptions, initial_estimate_from_observation


REGULARIZERS = {
    'tv': TotalVariationRegularizer,
    'btv': BilateralTotalVariationRegularizer,
    'smoothness': SmoothnessRegularizer,
}


def _load_grayscale(path):
    with Image.open(path) as image:
        return ImageData(image.convert('L'))


def _crop_to_multiple(image, scale):
    """Crop an ImageData so both sides are multiples of scale."""
    width, height = image.get_image_size()
    pixels = image.get_pixels()[:, :height - height % scale, :width - width % scale]
    return ImageData(pixels)


def _parse_shift(value):
    try:
        dy, dx = (int(v) for v in value.split(','))
    except ValueError:
        raise click.BadParameter(f"expected DY,DX integers, got '{value}'") from None
    return (dy, dx)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def main(verbose):
    """irlsmap - Multi-frame super-resolution with IRLS MAP estimation"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


@main.command()
@click.argument('input_image', type=click.Path(exists=True))
@click.argument('output_dir', type=click.Path())
@click.option('--scale', '-s', default=2, type=click.IntRange(min=1),
              help='Downsampling factor (default: 2)')
@click.option('--sigma', default=1.0, type=float,
              help='Gaussian blur sigma in HR pixels, 0 for none (default: 1.0)')
@click.option('--num-frames', '-n', default=4, type=int,
              help='Number of LR frames to generate (default: 4)')
@click.option('--max-shift', default=2, type=click.IntRange(min=0),
              help='Largest random shift in HR pixels (default: 2)')
@click.option('--noise', default=0.0, type=float,
              help='Gaussian noise sigma on a [0, 1] scale (default: 0)')
@click.option('--seed', default=None, type=int, help='Random seed')
def degrade(input_image, output_dir, scale, sigma, num_frames, max_shift, noise, seed):
    """Simulate shifted, blurred, downsampled frames of an image."""
    if num_frames <= 0:
        raise click.BadParameter('must be positive', param_hint='--num-frames')

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    rng = np.random.default_rng(seed)
    shifts = [(0, 0)] + [
        tuple(int(v) for v in rng.integers(-max_shift, max_shift + 1, size=2))
        for _ in range(num_frames - 1)
    ]

    try:
        image = _crop_to_multiple(_load_grayscale(input_image), scale)
        operator = DegradationOperator(
            scale,
            num_images=num_frames,
            blur_kernel=gaussian_kernel(sigma),
            motion_shifts=shifts,
        )
        for image_index in range(num_frames):
            frame = operator.degrade_image(image, image_index, noise_sigma=noise, rng=rng)
            frame_path = output_dir / f"frame_{image_index}.png"
            frame.to_pil_image().save(frame_path)
            click.echo(f"Saved {frame_path} (shift {shifts[image_index]})")
    except ValueError as e:
        raise click.ClickException(str(e))

    shift_args = ' '.join(f"--shift={dy},{dx}" for dy, dx in shifts)
    click.echo(f"Solve with: {shift_args}")


@main.command()
@click.argument('output_image', type=click.Path())
@click.argument('lr_images', nargs=-1, required=True, type=click.Path(exists=True))
@click.option('--scale', '-s', default=2, type=click.IntRange(min=1),
              help='Upsampling factor (default: 2)')
@click.option('--sigma', default=1.0, type=float,
              help='Gaussian blur sigma in HR pixels, 0 for none (default: 1.0)')
@click.option('--regularizer', '-r', default='tv',
              type=click.Choice(sorted(REGULARIZERS) + ['none']),
              help='Regularizer (default: tv)')
@click.option('--lambda', 'regularization_parameter', default=0.01, type=float,
              help='Regularization strength (default: 0.01)')
@click.option('--iterations', '-i', default=50, type=int,
              help='Maximum solver iterations, 0 for no cap (default: 50)')
@click.option('--epsilon', default=1e-3, type=float,
              help='IRLS weight floor (default: 1e-3)')
@click.option('--interpolation', default='bicubic',
              type=click.Choice(sorted(RESAMPLE_METHODS)),
              help='Upsampling for the initial estimate (default: bicubic)')
@click.option('--shift', 'shifts', multiple=True,
              help='Per-frame HR motion as DY,DX, one per LR image, e.g. --shift=-1,2')
@click.option('--ground-truth', type=click.Path(exists=True),
              help='HR reference image to report PSNR against')
def solve(output_image, lr_images, scale, sigma, regularizer, regularization_parameter,
          iterations, epsilon, interpolation, shifts, ground_truth):
    """Reconstruct a high-resolution image from low-resolution frames."""
    motion_shifts = [_parse_shift(value) for value in shifts] or None

    try:
        observations = [_load_grayscale(path) for path in lr_images]
        width, height = observations[0].get_image_size()
        image_size = (width * scale, height * scale)

        operator = DegradationOperator(
            scale,
            num_images=len(observations),
            blur_kernel=gaussian_kernel(sigma),
            motion_shifts=motion_shifts,
        )
        regularizers = []
        if regularizer != 'none':
            regularizers.append(
                (REGULARIZERS[regularizer](image_size), regularization_parameter)
            )

        options = SolverOptions(max_iterations=iterations, irls_epsilon=epsilon)
        solver = IrlsMapSolver(
            observations, operator, regularizers, image_size, options=options
        )
        initial_estimate = initial_estimate_from_observation(
            observations[0], scale, interpolation
        )
        click.echo(f"Solving {image_size[0]}x{image_size[1]} image "
                   f"from {len(observations)} frames...")
        estimate = solver.solve(initial_estimate)
    except ValueError as e:
        raise click.ClickException(str(e))

    estimate.to_pil_image().save(output_image)
    click.echo(f"Reconstructed image saved to {output_image}")
    click.echo(f"Iterations: {solver.objective.get_num_completed_iterations()}")

    if ground_truth:
        reference = _crop_to_multiple(_load_grayscale(ground_truth), scale)
        if reference.get_image_size() != image_size:
            raise click.ClickException(
                f"Ground truth size {reference.get_image_size()} does not match "
                f"{image_size}"
            )
        truth = reference.get_channel_image(0)
        click.echo(f"Initial PSNR: "
                   f"{psnr(truth, np.clip(initial_estimate.get_channel_image(0), 0, 1)):.2f} dB")
        click.echo(f"Final PSNR: "
                   f"{psnr(truth, np.clip(estimate.get_channel_image(0), 0, 1)):.2f} dB")


if __name__ == '__main__':
    main()
