"""
Feed-forward calibration network.

A single hidden layer perceptron trained with backpropagation:
- Both layers take an extra always-1 bias input; its weight is the last
  column of the layer's weight matrix
- Element-wise activation on both layers, MSE objective
- Online (per-sample) or batch (accumulate, then flush) weight updates,
  both with momentum
- Weights drawn from a seeded Gaussian so runs are reproducible
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from scipy.special import expit

from .errors import DimensionMismatch, InvalidModeUse, NumericDivergence
from .matrix import Matrix

DEFAULT_SEED = 555
BIAS_VALUE = 1.0


class Activation(Enum):
    SIGMOID = "sigmoid"
    RELU = "relu"

    def apply(self, x: np.ndarray) -> np.ndarray:
        if self is Activation.SIGMOID:
            return expit(x)
        return np.maximum(x, 0)

    def derivative(self, a: np.ndarray) -> np.ndarray:
        """Derivative expressed in terms of the activated value a."""
        if self is Activation.SIGMOID:
            return a * (1 - a)
        return (a > 0).astype(a.dtype)


class Loss(Enum):
    MSE = "mse"

    def error(self, prediction: np.ndarray, expected: np.ndarray) -> np.ndarray:
        return 0.5 * (prediction - expected) ** 2

    def gradient(self, prediction: np.ndarray, expected: np.ndarray) -> np.ndarray:
        """Gradient with respect to the prediction."""
        return prediction - expected


class TrainingMode(Enum):
    ONLINE = "online"
    BATCH = "batch"


@dataclass
class NetworkParameters:
    """Mutable training state of one network."""
    hidden_weights: Matrix
    output_weights: Matrix
    prev_hidden_delta: Matrix
    prev_output_delta: Matrix
    hidden_grad_sum: Matrix
    output_grad_sum: Matrix
    batch_count: int = 0

    @classmethod
    def zeros(cls, input_size: int, hidden_size: int, output_size: int) -> "NetworkParameters":
        h_shape = (hidden_size, input_size + 1)
        o_shape = (output_size, hidden_size + 1)
        return cls(
            hidden_weights=Matrix(*h_shape),
            output_weights=Matrix(*o_shape),
            prev_hidden_delta=Matrix(*h_shape),
            prev_output_delta=Matrix(*o_shape),
            hidden_grad_sum=Matrix(*h_shape),
            output_grad_sum=Matrix(*o_shape),
        )

    def reset_accumulators(self) -> None:
        self.hidden_grad_sum = Matrix(self.hidden_grad_sum.rows, self.hidden_grad_sum.cols)
        self.output_grad_sum = Matrix(self.output_grad_sum.rows, self.output_grad_sum.cols)
        self.batch_count = 0


def _with_bias(vector: Matrix) -> Matrix:
    """Append the bias input as the last row of a column vector."""
    return vector.resize(vector.rows + 1, 1, pad=BIAS_VALUE)


def _without_bias_column(weights: Matrix, fan_in: int) -> Matrix:
    """Drop the bias weights, which must be the last column."""
    if weights.cols != fan_in + 1:
        raise DimensionMismatch(
            f"Weight matrix has {weights.cols} columns, expected {fan_in} inputs plus a bias column"
        )
    return weights.resize(weights.rows, fan_in)


class CalibrationNetwork:
    """
    Bias-augmented single hidden layer network.

    Usage:
        net = CalibrationNetwork(60, 3600, 60, learning_rate=0.15, momentum=0.1)
        net.train(camera_joints, reference_joints)
        prediction = net.feed_forward(camera_joints)

        # Batch mode
        net = CalibrationNetwork(1, 20, 1, 0.15, 0.0, mode=TrainingMode.BATCH)
        for x, y in samples:
            net.train([x], [y])
        net.flush_batch()
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        output_size: int,
        learning_rate: float,
        momentum: float,
        mode: TrainingMode = TrainingMode.ONLINE,
        seed: int = DEFAULT_SEED,
        weight_mean: float = 0.0,
        weight_variance: float = 1.0,
        activation: Activation = Activation.SIGMOID,
        loss: Loss = Loss.MSE,
    ):
        if min(input_size, hidden_size, output_size) < 1:
            raise ValueError("Layer sizes must be positive")
        if weight_variance < 0:
            raise ValueError("weight_variance must be >= 0")

        self.input_size = input_size
        self.hidden_size = hidden_size
        self.output_size = output_size
        self.learning_rate = float(learning_rate)
        self.momentum = float(momentum)
        self.mode = mode
        self.seed = seed
        self.weight_mean = weight_mean
        self.weight_variance = weight_variance
        self.activation = activation
        self.loss = loss

        self._rng = np.random.default_rng(seed)
        self.params = NetworkParameters.zeros(input_size, hidden_size, output_size)
        self._randomize_weights()

    def _randomize_weights(self) -> None:
        std = float(np.sqrt(self.weight_variance))
        p = self.params
        p.hidden_weights = Matrix.from_array(
            self._rng.normal(self.weight_mean, std, size=p.hidden_weights.shape)
        )
        p.output_weights = Matrix.from_array(
            self._rng.normal(self.weight_mean, std, size=p.output_weights.shape)
        )

    @property
    def hidden_weights(self) -> Matrix:
        return self.params.hidden_weights

    @property
    def output_weights(self) -> Matrix:
        return self.params.output_weights

    @property
    def pending_samples(self) -> int:
        return self.params.batch_count

    def set_mode(self, mode: TrainingMode) -> None:
        if self.mode is TrainingMode.BATCH and mode is not TrainingMode.BATCH and self.params.batch_count:
            raise InvalidModeUse(
                f"Cannot leave batch mode with {self.params.batch_count} unflushed samples"
            )
        self.mode = mode

    def _column(self, values: Union[Sequence[float], np.ndarray], size: int, name: str) -> Matrix:
        vec = Matrix.column(np.asarray(values, dtype=np.float32).reshape(-1))
        if vec.rows != size:
            raise DimensionMismatch(f"{name} has {vec.rows} values, expected {size}")
        return vec

    def _forward(self, x_biased: Matrix) -> Tuple[Matrix, Matrix, Matrix]:
        act = self.activation.apply
        hidden = (self.params.hidden_weights * x_biased).invoke(act)
        hidden_biased = _with_bias(hidden)
        prediction = (self.params.output_weights * hidden_biased).invoke(act)
        return hidden, hidden_biased, prediction

    @staticmethod
    def _check_finite(prediction: Matrix) -> None:
        if not prediction.is_finite():
            raise NumericDivergence(
                "Network prediction contains NaN/Inf; training diverged (learning rate too high?)"
            )

    def feed_forward(self, input_values: Union[Sequence[float], np.ndarray]) -> Matrix:
        """
        Propagate an input through the hidden and output layers.

        Returns:
            Output column vector (output_size x 1)

        Raises:
            DimensionMismatch: If the input length is not input_size
            NumericDivergence: If the prediction is not finite
        """
        x = _with_bias(self._column(input_values, self.input_size, "Input"))
        _, _, prediction = self._forward(x)
        self._check_finite(prediction)
        return prediction

    def compute_gradients(
        self,
        input_values: Union[Sequence[float], np.ndarray],
        expected_values: Union[Sequence[float], np.ndarray],
    ) -> Tuple[Matrix, Matrix, float]:
        """
        Backpropagate one sample without touching the weights.

        Returns:
            (hidden gradient, output gradient, mean loss of the prediction)
        """
        x = _with_bias(self._column(input_values, self.input_size, "Input"))
        expected = self._column(expected_values, self.output_size, "Expected output")

        hidden, hidden_biased, prediction = self._forward(x)
        self._check_finite(prediction)

        deriv = self.activation.derivative

        # Output layer: dE/dw = act'(pred) * dE/dpred, times the layer input
        output_delta = prediction.invoke(deriv).hadamard(
            Matrix.invoke_pair(self.loss.gradient, prediction, expected)
        )
        output_grad = output_delta * hidden_biased.transpose()

        # Hidden layer: no hidden neuron feeds the output bias weight
        output_no_bias = _without_bias_column(self.params.output_weights, self.hidden_size)
        hidden_delta = hidden.invoke(deriv).hadamard(output_no_bias.transpose() * output_delta)
        hidden_grad = hidden_delta * x.transpose()

        loss = float(Matrix.invoke_pair(self.loss.error, prediction, expected).to_array().mean())
        return hidden_grad, output_grad, loss

    def _apply_update(self, hidden_grad: Matrix, output_grad: Matrix) -> None:
        p = self.params
        output_delta = output_grad * (-self.learning_rate) + p.prev_output_delta * self.momentum
        hidden_delta = hidden_grad * (-self.learning_rate) + p.prev_hidden_delta * self.momentum
        p.output_weights = p.output_weights + output_delta
        p.hidden_weights = p.hidden_weights + hidden_delta
        p.prev_output_delta = output_delta
        p.prev_hidden_delta = hidden_delta

    def train(
        self,
        input_values: Union[Sequence[float], np.ndarray],
        expected_values: Union[Sequence[float], np.ndarray],
    ) -> float:
        """
        Train on one sample.

        Online mode updates the weights immediately; batch mode only
        accumulates the gradients until flush_batch().

        Returns:
            Mean element-wise loss of the prediction made before the update
        """
        hidden_grad, output_grad, loss = self.compute_gradients(input_values, expected_values)

        if self.mode is TrainingMode.ONLINE:
            self._apply_update(hidden_grad, output_grad)
        else:
            p = self.params
            p.hidden_grad_sum = p.hidden_grad_sum + hidden_grad
            p.output_grad_sum = p.output_grad_sum + output_grad
            p.batch_count += 1

        return loss

    def flush_batch(self) -> bool:
        """
        Apply the averaged accumulated gradient and reset the accumulators.

        Returns:
            False if there was nothing to flush

        Raises:
            InvalidModeUse: If the network is in online mode
        """
        if self.mode is not TrainingMode.BATCH:
            raise InvalidModeUse("flush_batch() is only valid in batch mode")

        p = self.params
        if p.batch_count == 0:
            return False

        inv = 1.0 / p.batch_count
        self._apply_update(p.hidden_grad_sum * inv, p.output_grad_sum * inv)
        p.reset_accumulators()
        return True

    def save(self, path: Union[str, Path]) -> None:
        """Persist sizes, hyperparameters, weights and momentum state to .npz."""
        p = self.params
        np.savez(
            path,
            sizes=np.array([self.input_size, self.hidden_size, self.output_size]),
            hyper=np.array([self.learning_rate, self.momentum, self.weight_mean, self.weight_variance]),
            seed=np.array(self.seed),
            mode=np.array(self.mode.value),
            activation=np.array(self.activation.value),
            loss=np.array(self.loss.value),
            hidden_weights=p.hidden_weights.to_array(),
            output_weights=p.output_weights.to_array(),
            prev_hidden_delta=p.prev_hidden_delta.to_array(),
            prev_output_delta=p.prev_output_delta.to_array(),
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> "CalibrationNetwork":
        with np.load(path) as data:
            input_size, hidden_size, output_size = (int(v) for v in data["sizes"])
            learning_rate, momentum, mean, variance = (float(v) for v in data["hyper"])
            net = cls(
                input_size, hidden_size, output_size, learning_rate, momentum,
                mode=TrainingMode(str(data["mode"])),
                seed=int(data["seed"]),
                weight_mean=mean,
                weight_variance=variance,
                activation=Activation(str(data["activation"])),
                loss=Loss(str(data["loss"])),
            )
            p = net.params
            p.hidden_weights = Matrix.from_array(data["hidden_weights"])
            p.output_weights = Matrix.from_array(data["output_weights"])
            p.prev_hidden_delta = Matrix.from_array(data["prev_hidden_delta"])
            p.prev_output_delta = Matrix.from_array(data["prev_output_delta"])
        return net
