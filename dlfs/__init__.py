"""
dlfs package
~~~~~~~~~~~~

Minimal feed-forward neural network toolkit built from scratch.
Contains the dense matrix type, differentiable layers, gradient
computation, optimizers, the two-layer MNIST classifier, model
persistence, and the training API server.
"""

__version__ = "1.0.0"
