"""Static data shipped with hwfix: package sets and CCM presets."""
