"""taskstake: points economy for task completion, challenges, and rewards."""
