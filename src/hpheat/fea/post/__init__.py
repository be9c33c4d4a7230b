from hpheat.fea.post.linearizer import Linearizer, Orderizer

__all__ = ["Linearizer", "Orderizer"]
