from typing import Dict, List, Optional, Tuple, TypeAlias

NodeKey: TypeAlias = str
Vec3: TypeAlias = Tuple[float, float, float]
RttSamples: TypeAlias = List[Optional[float]]
PositionMap: TypeAlias = Dict[NodeKey, Vec3]
