#!/usr/bin/env python3
"""
Pattern Classifier Network
==========================

Feed-forward network mapping pattern feature vectors to label logits.

Architecture:
- Input: fixed-length feature vector (default 100 values)
- First hidden layer: Linear + ReLU
- Each further hidden layer: Linear + ReLU + Dropout
- Output: Linear to |labels| logits (softmax applied at prediction time)
"""

from __future__ import annotations

from typing import Sequence

import torch
from torch import Tensor, nn


class PatternClassifierNet(nn.Module):
    """
    Multi-layer perceptron over pattern features.

    Args:
        in_channels: Feature vector length
        hidden_layers: Hidden layer sizes (default: 64, 32)
        num_classes: Number of output labels
        dropout: Dropout probability between hidden layers (default: 0.2)
    """

    def __init__(
        self,
        in_channels: int,
        num_classes: int,
        hidden_layers: Sequence[int] = (64, 32),
        dropout: float = 0.2,
    ):
        super().__init__()

        if not hidden_layers:
            raise ValueError("At least one hidden layer is required")
        if num_classes < 1:
            raise ValueError("At least one output class is required")

        self.in_channels = in_channels
        self.hidden_layers = tuple(hidden_layers)
        self.num_classes = num_classes
        self.dropout = dropout

        layers: list[nn.Module] = [nn.Linear(in_channels, self.hidden_layers[0]), nn.ReLU()]
        for prev, size in zip(self.hidden_layers, self.hidden_layers[1:]):
            layers.append(nn.Linear(prev, size))
            layers.append(nn.ReLU())
            layers.append(nn.Dropout(p=dropout))
        layers.append(nn.Linear(self.hidden_layers[-1], num_classes))

        self.layers = nn.Sequential(*layers)

    def forward(self, x: Tensor) -> Tensor:
        """
        Args:
            x: Features [batch_size, in_channels]

        Returns:
            Logits [batch_size, num_classes]
        """
        return self.layers(x)

    @torch.no_grad()
    def predict_proba(self, x: Tensor) -> Tensor:
        self.eval()
        return torch.softmax(self.forward(x), dim=-1)

    def num_parameters(self) -> int:
        return sum(p.numel() for p in self.parameters())

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"in_channels={self.in_channels}, "
            f"hidden_layers={list(self.hidden_layers)}, "
            f"num_classes={self.num_classes}, "
            f"dropout={self.dropout})"
        )
