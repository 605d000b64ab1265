"""AI Fitness Coach: food photo to nutrition log pipeline."""
