#!/usr/bin/env python3
"""
Train the default 784-50-10 network on MNIST from the command line.

Usage:
    python scripts/train_mnist.py data/mnist.npz --iters-num 1000

Loss is logged after every update; test accuracy is logged at the end.
"""

import argparse
import logging
import os
import sys

import numpy as np

from dlfs import mnist_loader
from dlfs.network import TwoLayerNet
from dlfs.optimizers import OPTIMIZERS, create_optimizer

logger = logging.getLogger('train_mnist')


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument('mnist_path', help='Path to mnist.npz')
    parser.add_argument('--iters-num', type=int, default=10000)
    parser.add_argument('--batch-size', type=int, default=100)
    parser.add_argument('--learning-rate', type=float, default=0.1)
    parser.add_argument('--optimizer', choices=sorted(OPTIMIZERS), default='sgd')
    parser.add_argument('--hidden-size', type=int, default=50)
    parser.add_argument('--eval-limit', type=int, default=1000,
                        help='Number of test images used for accuracy')
    parser.add_argument('--seed', type=int, default=None)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        training, _, test = mnist_loader.load_data(args.mnist_path)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1

    net = TwoLayerNet(
        training.image_size, args.hidden_size, training.label_size, seed=args.seed
    )
    optimizer = create_optimizer(args.optimizer, args.learning_rate)

    logger.info("START: TRAIN")
    net.train(
        training,
        args.iters_num,
        args.batch_size,
        optimizer,
        rng=np.random.default_rng(args.seed)
    )
    logger.info("END: TRAIN")

    x_test, t_test = test.as_matrices(args.eval_limit)
    logger.info(f"Test accuracy: {net.accuracy(x_test, t_test):.2%}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
