"""Moteur de checkout et de règlement d'une marketplace multi-vendeurs."""
