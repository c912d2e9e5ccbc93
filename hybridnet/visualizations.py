"""
Training Report Plots
=====================

Accuracy and learning-rate curves from a Trainer history.
"""

import matplotlib.pyplot as plt


def plot_training_history(history, figsize=(14, 5), save_path=None, show=False):
    """
    Plot training/validation accuracy and the learning rate per epoch.

    Args:
        history: Dictionary returned by Trainer.train()
        figsize: Figure size
        save_path: Path to save figure
        show: Open an interactive window

    Returns:
        The matplotlib Figure
    """
    fig, axes = plt.subplots(1, 2, figsize=figsize)

    epochs = range(len(history['train_accuracy']))

    # Accuracy plot
    axes[0].plot(epochs, history['train_accuracy'], 'b-', label='Training Accuracy', linewidth=2)
    axes[0].plot(epochs, history['valid_accuracy'], 'r-', label='Validation Accuracy', linewidth=2)
    axes[0].set_xlabel('Epoch', fontsize=12)
    axes[0].set_ylabel('Accuracy', fontsize=12)
    axes[0].set_title('Training and Validation Accuracy', fontsize=14)
    axes[0].legend(fontsize=10)
    axes[0].grid(True, alpha=0.3)

    # Learning rate plot
    axes[1].plot(epochs, history['learning_rate'], 'g-', linewidth=2)
    axes[1].set_xlabel('Epoch', fontsize=12)
    axes[1].set_ylabel('Learning Rate', fontsize=12)
    axes[1].set_title('Learning Rate', fontsize=14)
    axes[1].grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"Training history plot saved to {save_path}")

    if show:
        plt.show()
    else:
        plt.close(fig)

    return fig
